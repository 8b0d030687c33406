import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Base configuration class."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Scheduler configuration
    SCHEDULER_INTERVAL_SECONDS = int(os.environ.get('SCHEDULER_INTERVAL_SECONDS', '300'))  # 5 minutes
    SCHEDULER_BATCH_SIZE = int(os.environ.get('SCHEDULER_BATCH_SIZE', '100'))
    START_SCHEDULER = os.environ.get('START_SCHEDULER', 'false').lower() == 'true'

    # Business hours window used by only_business_hours / skip_weekends
    BUSINESS_HOURS_START = int(os.environ.get('BUSINESS_HOURS_START', '9'))
    BUSINESS_HOURS_END = int(os.environ.get('BUSINESS_HOURS_END', '18'))
    BUSINESS_TIMEZONE = os.environ.get('BUSINESS_TIMEZONE', 'UTC')  # IANA timezone format

    # Action dispatch configuration
    ACTION_DISPATCH_URL = os.environ.get('ACTION_DISPATCH_URL')
    ACTION_DISPATCH_API_KEY = os.environ.get('ACTION_DISPATCH_API_KEY')
    ACTION_TIMEOUT_SECONDS = int(os.environ.get('ACTION_TIMEOUT_SECONDS', '30'))
    MAX_EXECUTION_ATTEMPTS = int(os.environ.get('MAX_EXECUTION_ATTEMPTS', '3'))
    IN_PROGRESS_TIMEOUT_SECONDS = int(os.environ.get('IN_PROGRESS_TIMEOUT_SECONDS', '900'))  # 15 minutes
    IN_FLIGHT_RECOVERY = os.environ.get('IN_FLIGHT_RECOVERY', 'fault')  # fault | retry

    # CORS configuration
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Logging configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///sequence_engine.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = True

    # Development-specific settings
    TESTING = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False

    # Production database (PostgreSQL)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Production security settings
    SECRET_KEY = os.environ.get('SECRET_KEY')

    # Production CORS (more restrictive)
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '').split(',')

    @classmethod
    def validate_config(cls):
        """Validate production configuration."""
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise ValueError("DATABASE_URL environment variable is required for production")

        if not cls.SECRET_KEY:
            raise ValueError("SECRET_KEY environment variable is required for production")

        if not cls.ACTION_DISPATCH_URL:
            raise ValueError("ACTION_DISPATCH_URL environment variable is required for production")

        if cls.IN_FLIGHT_RECOVERY not in ('fault', 'retry'):
            raise ValueError("IN_FLIGHT_RECOVERY must be either 'fault' or 'retry'")

        if not cls.CORS_ORIGINS or cls.CORS_ORIGINS == ['']:
            raise ValueError("CORS_ORIGINS environment variable is required for production")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    START_SCHEDULER = False
    ACTION_DISPATCH_URL = None
    BUSINESS_TIMEZONE = 'UTC'
    BUSINESS_HOURS_START = 9
    BUSINESS_HOURS_END = 18
    MAX_EXECUTION_ATTEMPTS = 3
    IN_PROGRESS_TIMEOUT_SECONDS = 900
    IN_FLIGHT_RECOVERY = 'fault'


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
