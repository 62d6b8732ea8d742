from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

from app.extentions.celery_extention import create_celery

jwt = JWTManager()
db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO()
celery_app = create_celery()


class RedisClient:
    def __init__(self):
        self.client = None

    def init_app(self, app):
        import redis
        self.client = redis.from_url(app.config['REDIS_URL'], decode_responses=True)

    def get(self, key):
        return self.client.get(key)

    def set(self, key, value, ex=None):
        return self.client.set(key, value, ex=ex)

    def getdel(self, key):
        return self.client.getdel(key)

    def delete(self, key):
        return self.client.delete(key)

    def exists(self, key):
        return self.client.exists(key)

    def ping(self):
        return self.client.ping()


redis_client = RedisClient()
