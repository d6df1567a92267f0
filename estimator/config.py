import os


def _csv(value: str) -> tuple:
    return tuple(v.strip() for v in value.split(',') if v.strip())


class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///estimator.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Approval chain
    APPROVAL_LEVELS = 4
    APPROVAL_LEVEL_NAMES = {
        1: 'Junior Engineer',
        2: 'Sub Division Engineer',
        3: 'Divisional Engineer',
        4: 'Executive Engineer',
    }
    OVERRIDE_ROLES = _csv(os.getenv('OVERRIDE_ROLES', 'super_admin,developer'))

    # Reference rate catalog (SSR/CSR schedules)
    RATE_CATALOG_URL = os.getenv('RATE_CATALOG_URL', '')
    RATE_CATALOG_API_KEY = os.getenv('RATE_CATALOG_API_KEY', '')
    RATE_CATALOG_TIMEOUT = int(os.getenv('RATE_CATALOG_TIMEOUT', '10'))


class DevConfig(BaseConfig):
    DEBUG = True
    ENV = 'development'


class ProdConfig(BaseConfig):
    DEBUG = False
    ENV = 'production'


class TestConfig(BaseConfig):
    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    RATE_CATALOG_URL = 'http://catalog.test/api'


CONFIGS = {
    'development': DevConfig,
    'production': ProdConfig,
    'testing': TestConfig,
}
