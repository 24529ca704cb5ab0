from app.api.admin.catalogue import admin_catalogue_bp
from app.api.admin.slots import admin_slots_bp
from app.api.booking.appointments import appointments_bp
from app.api.booking.consultations import consultations_bp
from app.api.customer.details import details_bp
from app.routes.auth import auth_bp
from app.routes.firms import firms_bp
from flask import Flask, jsonify
from flask_cors import CORS
from dotenv import load_dotenv
from flasgger import Swagger
from swagger__config import SWAGGER_CONFIG, SWAGGER_TEMPLATE
import logging
import os

load_dotenv()
from app.config import Config  # noqa: E402
from app.errors import register_error_handlers  # noqa: E402
from app.extensions import database_is_reachable, init_database  # noqa: E402

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    app.json.sort_keys = False

    CORS(app)

    if not app.config.get("JWT_SECRET"):
        logger.warning("JWT_SECRET is not set; token issuance will fail")

    init_database(app)
    register_error_handlers(app)

    # Determine host based on environment
    host = os.environ.get("API_HOST", "127.0.0.1:5000")
    swagger_template = SWAGGER_TEMPLATE.copy()
    swagger_template["host"] = host
    Swagger(app, config=SWAGGER_CONFIG, template=swagger_template)

    blueprints = [
        auth_bp,
        details_bp,
        consultations_bp,
        appointments_bp,
        firms_bp,
        admin_catalogue_bp,
        admin_slots_bp,
    ]

    for bp in blueprints:
        app.register_blueprint(bp)
        logger.debug("%s registered", bp.name)

    @app.route("/")
    def home():
        """
        Root endpoint - API status
        ---
        tags:
          - Utility
        responses:
          200:
            description: API is running
            schema:
              type: object
              properties:
                status:
                  type: string
                message:
                  type: string
                docs_url:
                  type: string
        """
        return {
            "status": "ok",
            "message": "Backend is running!",
            "docs_url": "/api/docs",
        }, 200

    @app.route("/api/health")
    def health():
        """
        Liveness and database reachability
        ---
        tags:
          - Utility
        responses:
          200:
            description: Service and database are up
          503:
            description: Database unreachable
        """
        if database_is_reachable():
            return jsonify({"status": "ok", "database": "up"}), 200
        return jsonify({"status": "degraded", "database": "down"}), 503

    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        from app.scheduler import init_scheduler

        init_scheduler(app)

    logger.info("create_app() completed with %d routes", len(list(app.url_map.iter_rules())))
    return app


app = create_app()


if __name__ == "__main__":
    # Create a .env containing:
    #       DATABASE_URL=mysql+pymysql://<USER>:<PASSWORD>@<HOST>:<PORT>/lawfirm
    #       JWT_SECRET=<random string>
    port = int(os.environ.get("PORT", 5000))
    app.run(
        host="0.0.0.0", port=port, debug=os.environ.get("FLASK_ENV") != "production"
    )
