import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration"""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key')
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'dev-jwt-secret')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=1)

    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'postgresql://localhost/stkpay_dev')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

    CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', REDIS_URL)
    CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', REDIS_URL)
    CELERY_TASK_ALWAYS_EAGER = False

    # M-Pesa (Daraja) configuration
    MPESA_ENV = os.getenv('MPESA_ENV', 'sandbox')
    MPESA_BASE_URL = os.getenv('MPESA_BASE_URL')  # overrides MPESA_ENV when set
    MPESA_CONSUMER_KEY = os.getenv('MPESA_CONSUMER_KEY')
    MPESA_CONSUMER_SECRET = os.getenv('MPESA_CONSUMER_SECRET')
    MPESA_SHORTCODE = os.getenv('MPESA_SHORTCODE', '174379')
    MPESA_PASSKEY = os.getenv('MPESA_PASSKEY')
    MPESA_CALLBACK_URL = os.getenv('MPESA_CALLBACK_URL', '')
    MPESA_TRANSACTION_TYPE = os.getenv('MPESA_TRANSACTION_TYPE', 'CustomerPayBillOnline')
    MPESA_TIMEOUT = int(os.getenv('MPESA_TIMEOUT', '10'))
    MPESA_COUNTRY_CODE = os.getenv('MPESA_COUNTRY_CODE', '254')
    MPESA_ACCOUNT_PREFIX = os.getenv('MPESA_ACCOUNT_PREFIX', '')
    # Daraja expects the password timestamp in a fixed clock; pin it per the
    # provider docs for the shortcode in use.
    MPESA_TIMESTAMP_TIMEZONE = os.getenv('MPESA_TIMESTAMP_TIMEZONE', 'UTC')

    # Status polling: requests per client per minute
    STATUS_QUERY_RATE_LIMIT = int(os.getenv('STATUS_QUERY_RATE_LIMIT', '30'))

    # Unmatched callbacks are re-applied by a background task this many times
    CALLBACK_RECONCILE_MAX_ATTEMPTS = int(os.getenv('CALLBACK_RECONCILE_MAX_ATTEMPTS', '5'))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False
    MPESA_ENV = os.getenv('MPESA_ENV', 'production')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    JWT_SECRET_KEY = 'test-jwt-secret-with-enough-length-for-hs256'
    CELERY_TASK_ALWAYS_EAGER = True

    MPESA_ENV = 'sandbox'
    MPESA_BASE_URL = None
    MPESA_CONSUMER_KEY = 'test_consumer_key'
    MPESA_CONSUMER_SECRET = 'test_consumer_secret'
    MPESA_SHORTCODE = '174379'
    MPESA_PASSKEY = 'test_passkey'
    MPESA_CALLBACK_URL = 'https://shop.example.com/api/v1/mpesa/callback'
    MPESA_TIMESTAMP_TIMEZONE = 'UTC'
    STATUS_QUERY_RATE_LIMIT = 1000


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
