# routes/health.py
from flask import Blueprint, jsonify
import logging
import time

import config
import db_utils as db_tools

logger = logging.getLogger(__name__)
health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET'])
def health_check():
    """Health check: database reachability, pool statistics and catalog settings"""
    health_status = {
        'status': 'unknown',
        'database': 'unknown',
        'pool_stats': None,
        'mbs_base_url': config.MBS_BASE_URL,
        'timestamp': time.time()
    }

    try:
        if db_tools.USE_POOLING:
            if db_tools.pool is None:
                health_status['status'] = 'unhealthy'
                health_status['database'] = 'pool not initialized'
                return jsonify(health_status), 503
            health_status['pool_stats'] = db_tools.get_pool_stats()

        result = db_tools.execute_query(
            "SELECT COUNT(*) as playbacks FROM playbacks",
            fetch_one=True
        )

        health_status['status'] = 'healthy'
        health_status['database'] = 'connected'
        health_status['playback_count'] = result['playbacks'] if result else 0

        return jsonify(health_status), 200

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        health_status['status'] = 'unhealthy'
        health_status['database'] = f'error: {str(e)}'
        return jsonify(health_status), 503
