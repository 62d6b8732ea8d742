"""
Health Check and System Monitoring Endpoints
"""

from flask import Blueprint, jsonify
from datetime import datetime
import os
import psutil
from sqlalchemy import func, text

from app.extensions import db, redis_client

health_bp = Blueprint('health', __name__)

SERVICE_NAME = 'hotspot-billing'
SERVICE_VERSION = '1.0.0'


def _database_ok() -> bool:
    db.session.execute(text('SELECT 1'))
    return True


@health_bp.route('/health', methods=['GET'])
def health_check():
    """
    Basic health check endpoint

    Returns:
        200 if system is healthy
        503 if system has issues
    """
    checks = {}
    overall_healthy = True

    try:
        _database_ok()
        checks['database'] = {
            'status': 'healthy',
            'message': 'Database connection OK'
        }
    except Exception as e:
        checks['database'] = {
            'status': 'unhealthy',
            'message': f'Database error: {str(e)}'
        }
        overall_healthy = False

    try:
        redis_client.set('health_check', 'ok', ex=10)
        if redis_client.get('health_check') == 'ok':
            checks['redis'] = {
                'status': 'healthy',
                'message': 'Redis connection OK'
            }
        else:
            checks['redis'] = {
                'status': 'unhealthy',
                'message': 'Redis read/write failed'
            }
            overall_healthy = False
    except Exception as e:
        checks['redis'] = {
            'status': 'unhealthy',
            'message': f'Redis error: {str(e)}'
        }
        overall_healthy = False

    return jsonify({
        'status': 'healthy' if overall_healthy else 'unhealthy',
        'timestamp': datetime.utcnow().isoformat(),
        'service': SERVICE_NAME,
        'version': SERVICE_VERSION,
        'checks': checks
    }), 200 if overall_healthy else 503


@health_bp.route('/health/live', methods=['GET'])
def liveness_probe():
    return jsonify({
        'status': 'alive',
        'timestamp': datetime.utcnow().isoformat()
    }), 200


@health_bp.route('/health/ready', methods=['GET'])
def readiness_probe():
    """Ready once both the database and Redis answer"""
    ready = True
    checks = {}

    try:
        _database_ok()
        checks['database'] = 'ready'
    except Exception:
        checks['database'] = 'not_ready'
        ready = False

    try:
        redis_client.client.ping()
        checks['redis'] = 'ready'
    except Exception:
        checks['redis'] = 'not_ready'
        ready = False

    return jsonify({
        'status': 'ready' if ready else 'not_ready',
        'checks': checks,
        'timestamp': datetime.utcnow().isoformat()
    }), 200 if ready else 503


@health_bp.route('/metrics', methods=['GET'])
def metrics():
    """Process metrics plus payment and webhook counts"""
    from app.models import PaymentRecord, WebhookEvent, AuditLog

    memory = psutil.virtual_memory()
    process = psutil.Process()

    by_status = dict(
        db.session.query(PaymentRecord.status, func.count(PaymentRecord.id))
        .group_by(PaymentRecord.status)
        .all()
    )
    by_service = dict(
        db.session.query(PaymentRecord.service, func.count(PaymentRecord.id))
        .group_by(PaymentRecord.service)
        .all()
    )

    return jsonify({
        'timestamp': datetime.utcnow().isoformat(),
        'system': {
            'cpu_percent': psutil.cpu_percent(interval=None),
            'memory': {
                'total': memory.total,
                'available': memory.available,
                'percent': memory.percent
            },
            'process': {
                'pid': os.getpid(),
                'threads': process.num_threads(),
                'rss': process.memory_info().rss
            }
        },
        'application': {
            'payments': {
                'total': sum(by_status.values()),
                'by_status': by_status,
                'by_service': {str(k): v for k, v in by_service.items()}
            },
            'webhooks': {
                'total': WebhookEvent.query.count(),
                'processed': WebhookEvent.query.filter_by(processed=True).count(),
                'failed': WebhookEvent.query.filter(WebhookEvent.error_message.isnot(None)).count()
            },
            'audit_logs': {
                'total': AuditLog.query.count()
            }
        }
    }), 200
