import os
import yaml
from pathlib import Path
from sqlalchemy.engine import URL

from cloner.errors import ConfigError

# Central config loader. Loaded once at startup by the service:
#   from config.config_loader import get_config
#   config = get_config()
# Secrets may come from the environment (.env is loaded by the launcher).

CONFIG_PATH_ENV = 'MEDIA_CLONER_CONFIG'

_SECRET_OVERRIDES = {
    'MEDIA_CLONER_DB_PASSWORD': ('db', 'pass'),
    'MEDIA_CLONER_AWS_KEY': ('aws', 'key'),
    'MEDIA_CLONER_AWS_SECRET': ('aws', 'secret'),
}


class Config:
    _instance = None

    def __init__(self, path=None):
        self.BASE_DIR = Path(__file__).resolve().parent.parent
        if path is None:
            path = os.environ.get(CONFIG_PATH_ENV) or self.BASE_DIR / 'config' / 'cloner_config.yaml'
        self.path = Path(path)
        self._load_yaml_config()
        self._apply_env_overrides()
        self._set_sections()

    @classmethod
    def instance(cls, path=None):
        if cls._instance is None:
            cls._instance = cls(path)
        return cls._instance

    @classmethod
    def reset(cls):
        cls._instance = None

    def _load_yaml_config(self):
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                self.raw = yaml.safe_load(f) or {}
        except FileNotFoundError as exc:
            raise ConfigError(f"Configuration file not found at '{self.path}'") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Could not parse configuration file '{self.path}': {exc}") from exc
        if not isinstance(self.raw, dict):
            raise ConfigError(f"Configuration file '{self.path}' must contain a mapping")

    def _apply_env_overrides(self):
        for env_name, (section, key) in _SECRET_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                if not isinstance(self.raw.get(section), dict):
                    self.raw[section] = {}
                self.raw[section][key] = value

    def _set_sections(self):
        db = self.raw.get('db') or {}
        aws = self.raw.get('aws') or {}
        search = self.raw.get('search_index') or {}
        pipeline = self.raw.get('pipeline') or {}
        scheduler = self.raw.get('scheduler') or {}
        run_lock = self.raw.get('run_lock') or {}
        logging_section = self.raw.get('logging') or {}

        # Database (MySQL in production, any SQLAlchemy URL for local runs)
        self.DB_URL = db.get('url')
        self.DB_USER = db.get('user')
        self.DB_PASSWORD = db.get('pass')
        self.DB_SERVER = db.get('server')
        self.DB_NAME = db.get('dbName')
        self.DB_SCHEMA = db.get('schema')
        self.DB_DRIVER = db.get('driver', 'mysql+pymysql')
        if not self.DB_URL and not (self.DB_SERVER and self.DB_NAME):
            raise ConfigError("db.server and db.dbName (or db.url) are required")

        # Object storage
        self.AWS_KEY = aws.get('key')
        self.AWS_SECRET = aws.get('secret')
        self.AWS_ENDPOINT = aws.get('endpoint')
        self.AWS_REGION = aws.get('region')
        self.AWS_BUCKET = aws.get('bucket')
        self.AWS_FOLDER = str(aws.get('folder') or '').strip('/')
        self.AWS_ACL = aws.get('acl', 'public-read')
        if not self.AWS_BUCKET:
            raise ConfigError("aws.bucket is required")

        # Search index; a bare top-level 'solr' URL is accepted as well
        self.SEARCH_BACKEND = search.get('backend', 'solr')
        self.SOLR_URL = (search.get('url') or self.raw.get('solr') or '').rstrip('/')
        self.SEARCH_TIMEOUT = float(search.get('timeout', 10))
        self.ELASTICSEARCH_HOSTS = search.get('hosts', ['http://localhost:9200'])
        self.ELASTICSEARCH_INDEX = search.get('index', 'posts')
        if self.SEARCH_BACKEND == 'solr' and not self.SOLR_URL:
            raise ConfigError("search_index.url (or solr) is required for the solr backend")
        if self.SEARCH_BACKEND not in ('solr', 'elasticsearch'):
            raise ConfigError(f"Unknown search_index.backend '{self.SEARCH_BACKEND}'")

        # Pipeline tuning
        self.STAGING_DIR = Path(pipeline.get('staging_dir', '.'))
        self.FETCH_TIMEOUT = float(pipeline.get('fetch_timeout', 5))
        self.RECENCY_WINDOW_HOURS = float(pipeline.get('recency_window_hours', 2))
        self.MAX_ATTEMPTS = int(pipeline.get('max_attempts', 3))
        self.MAX_WORKERS = int(pipeline.get('max_workers', 1))

        self.INTERVAL_MINUTES = float(scheduler.get('interval_minutes', 10))

        self.RUN_LOCK_BACKEND = run_lock.get('backend', 'local')
        self.REDIS_HOST = run_lock.get('host', '127.0.0.1')
        self.REDIS_PORT = int(run_lock.get('port', 6379))
        self.REDIS_DB = int(run_lock.get('db', 0))
        self.RUN_LOCK_KEY = run_lock.get('key', 'media_cloner:run_lock')
        self.RUN_LOCK_TTL = int(run_lock.get('ttl_seconds', 3600))

        # Logging level fallback
        self.LOG_LEVEL = logging_section.get('level', 'INFO')
        self.LOG_FILE = logging_section.get('file')

    @property
    def database_url(self):
        if self.DB_URL:
            return self.DB_URL
        host, _, port = str(self.DB_SERVER).partition(":")
        return URL.create(
            self.DB_DRIVER,
            username=self.DB_USER,
            password=self.DB_PASSWORD,
            host=host,
            port=int(port) if port else None,
            database=self.DB_NAME,
            query={"charset": "utf8mb4"},
        )


def get_config(path=None):
    """Return the process-wide config, loading it on first use."""
    return Config.instance(path)
