import os
import logging
from flask import Flask, jsonify, redirect, url_for
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from dotenv import load_dotenv

from .config import CONFIGS, ProdConfig
from .errors import EstimatorError

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()


def create_app(config_name: str | None = None, overrides: dict | None = None) -> Flask:
    """Application factory with environment based configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Pick configuration
    env = config_name or os.getenv('ENV') or os.getenv('FLASK_ENV') or 'production'
    app.config.from_object(CONFIGS.get(env, ProdConfig))
    if overrides:
        app.config.update(overrides)

    # Initialise logging
    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    db.init_app(app)
    migrate.init_app(app, db)

    # Ensure models loaded so tables can be created
    from estimator import models  # noqa
    with app.app_context():
        db.create_all()

    @app.route('/')
    def index():
        return redirect(url_for('works.list_works'))

    @app.errorhandler(EstimatorError)
    def estimator_error(err):
        db.session.rollback()
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(404)
    def not_found(_):
        return jsonify(error='not_found', message='Resource not found'), 404

    @app.errorhandler(500)
    def server_error(_):
        return jsonify(error='server_error', message='Internal server error'), 500

    from estimator.works.routes import bp as works_bp
    from estimator.measurements.routes import bp as measurements_bp
    from estimator.rate_analysis.routes import bp as rate_analysis_bp
    from estimator.approvals.routes import bp as approvals_bp
    from estimator.cli import estimate_cli

    app.register_blueprint(works_bp, url_prefix='/works')
    app.register_blueprint(measurements_bp, url_prefix='/items')
    app.register_blueprint(rate_analysis_bp, url_prefix='/rate-analysis')
    app.register_blueprint(approvals_bp, url_prefix='/approvals')
    app.cli.add_command(estimate_cli)

    return app
