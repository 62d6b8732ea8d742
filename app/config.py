import os
from datetime import timedelta
from celery.schedules import crontab
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration"""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key')
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'dev-jwt-secret')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=1)

    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'postgresql://localhost/hotspot_billing_dev')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

    CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/1')
    CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/2')
    CELERY_BEAT_SCHEDULE = {
        'reconcile-pending-payments': {
            'task': 'app.tasks.reconcile_payments_task.reconcile_pending_payments',
            'schedule': crontab(),
        },
        'request-shortcode-balances': {
            'task': 'app.tasks.shortcode_balance_task.request_shortcode_balances',
            'schedule': crontab(),
        },
        'register-c2b-urls': {
            'task': 'app.tasks.register_urls_task.register_c2b_urls',
            'schedule': crontab(minute='*/30'),
        },
    }

    # Public base URL used for ResultURL / QueueTimeOutURL / confirmation URLs
    BASE_URL = os.getenv('BASE_URL', 'http://localhost:5000')

    # M-Pesa (Daraja)
    MPESA_ENV = os.getenv('MPESA_ENV', 'sandbox')
    MPESA_CALLBACK_URL = os.getenv('MPESA_CALLBACK_URL', '')
    MPESA_CERT_PATH = os.getenv('MPESA_CERT_PATH', 'certs/ProductionCertificate.cer')
    PROVIDER_TIMEOUT = int(os.getenv('PROVIDER_TIMEOUT', 30))

    # Environment-scoped C2B credentials (shared collection shortcode)
    MPESA_C2B_CONSUMER_KEY = os.getenv('MPESA_C2B_CONSUMER_KEY')
    MPESA_C2B_CONSUMER_SECRET = os.getenv('MPESA_C2B_CONSUMER_SECRET')
    MPESA_C2B_SHORT_CODE = os.getenv('MPESA_C2B_SHORT_CODE')
    MPESA_C2B_SHORT_CODE_TYPE = os.getenv('MPESA_C2B_SHORT_CODE_TYPE', 'Paybill')
    MPESA_C2B_PASS_KEY = os.getenv('MPESA_C2B_PASS_KEY')
    MPESA_C2B_INITIATOR_NAME = os.getenv('MPESA_C2B_INITIATOR_NAME')
    MPESA_C2B_INITIATOR_PASSWORD = os.getenv('MPESA_C2B_INITIATOR_PASSWORD')

    # IntaSend
    INTASEND_PUBLISHABLE_KEY = os.getenv('INTASEND_PUBLISHABLE_KEY')
    INTASEND_SECRET_KEY = os.getenv('INTASEND_SECRET_KEY')
    INTASEND_CHALLENGE = os.getenv('INTASEND_CHALLENGE')
    INTASEND_TEST_MODE = os.getenv('INTASEND_TEST_MODE', 'true').lower() == 'true'

    # Collaborators
    PROVISIONING_API_URL = os.getenv('PROVISIONING_API_URL', '')
    PROVISIONING_API_KEY = os.getenv('PROVISIONING_API_KEY', '')
    SMS_API_URL = os.getenv('SMS_API_URL', '')
    SMS_API_KEY = os.getenv('SMS_API_KEY', '')
    SMS_PARTNER_ID = os.getenv('SMS_PARTNER_ID', '')
    SMS_SHORTCODE = os.getenv('SMS_SHORTCODE', '')
    MAILER_API_URL = os.getenv('MAILER_API_URL', '')
    MAILER_API_KEY = os.getenv('MAILER_API_KEY', '')

    # Reconciliation engine
    CORRELATION_BACKEND = os.getenv('CORRELATION_BACKEND', 'memory')
    CORRELATION_TTL_SECONDS = int(os.getenv('CORRELATION_TTL_SECONDS', 600))
    ACTIVATION_RETRY_INTERVAL = float(os.getenv('ACTIVATION_RETRY_INTERVAL', 1))
    ACTIVATION_RETRY_TIMEOUT = float(os.getenv('ACTIVATION_RETRY_TIMEOUT', 10))
    C2B_POOL_THRESHOLD = int(os.getenv('C2B_POOL_THRESHOLD', 10))
    RECONCILE_MAX_AGE_DAYS = int(os.getenv('RECONCILE_MAX_AGE_DAYS', 7))
    RECONCILE_MIN_AGE_SECONDS = int(os.getenv('RECONCILE_MIN_AGE_SECONDS', 120))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False
    MPESA_ENV = os.getenv('MPESA_ENV', 'production')
    INTASEND_TEST_MODE = os.getenv('INTASEND_TEST_MODE', 'false').lower() == 'true'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    BASE_URL = 'https://billing.test'
    MPESA_CALLBACK_URL = 'https://billing.test/mpesa/callback'
    INTASEND_CHALLENGE = 'test-challenge'
    JWT_SECRET_KEY = 'test-jwt-secret-key-0123456789abcdef'
    INTASEND_PUBLISHABLE_KEY = 'ISPubKey_test'
    INTASEND_SECRET_KEY = 'ISSecretKey_test'
    MPESA_C2B_CONSUMER_KEY = 'c2b-key'
    MPESA_C2B_CONSUMER_SECRET = 'c2b-secret'
    MPESA_C2B_SHORT_CODE = '600100'
    MPESA_C2B_PASS_KEY = 'c2b-passkey'
    MPESA_C2B_INITIATOR_NAME = 'c2b-initiator'
    MPESA_C2B_INITIATOR_PASSWORD = 'c2b-password'
    CORRELATION_BACKEND = 'memory'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
