from flask import Flask, jsonify
import logging

from config import Config
import logging_config  # noqa: F401  (configures handlers on import)
from db import init_all_tables
from water_routes import water_bp

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = Config.FLASK_SECRET_KEY
app.json.sort_keys = False

app.register_blueprint(water_bp)

init_all_tables()


@app.route('/health')
def health():
    return jsonify({'status': 'ok'})


if __name__ == '__main__':
    logger.info(f"Starting Aquamonitor on port {Config.PORT}")
    app.run(debug=Config.DEBUG, port=Config.PORT)
