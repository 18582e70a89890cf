from flask import Flask

from markstack.api import api_bp
from markstack.config import Config
from markstack.extensions import db


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)

    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized markstack database.")

    with app.app_context():
        db.create_all()

    return app
