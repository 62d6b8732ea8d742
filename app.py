import os
from app import create_app
from app.extensions import db, socketio

app = create_app(os.getenv('FLASK_ENV', 'development'))

@app.shell_context_processor
def make_shell_context():
    from app.models import PaymentRecord, FundsAccount, C2BTransferPool, PlatformConfig, AuditLog, WebhookEvent
    return {
        'db': db,
        'PaymentRecord': PaymentRecord,
        'FundsAccount': FundsAccount,
        'C2BTransferPool': C2BTransferPool,
        'PlatformConfig': PlatformConfig,
        'AuditLog': AuditLog,
        'WebhookEvent': WebhookEvent
    }

if __name__ == '__main__':
    socketio.run(app, debug=True, host='0.0.0.0', port=5000)
