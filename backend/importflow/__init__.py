"""
Flask Application Factory
Creates and configures the import operations API with CORS and blueprints
"""
import logging
from flask import Flask, jsonify, request
from flask_cors import CORS
from dotenv import load_dotenv
import os


def create_app():
    load_dotenv()

    # Configure logging
    log_level = logging.DEBUG if os.environ.get('FLASK_DEBUG', '').lower() == 'true' else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger('importflow')

    # Suppress noisy werkzeug access logs
    logging.getLogger('werkzeug').setLevel(logging.WARNING)

    app = Flask(__name__)

    # Log configuration status
    from importflow.config import config
    from importflow.services.nocodb import get_nocodb_status
    logger.info(f"NocoDB configured: {config.is_nocodb_configured()}")
    logger.info(f"Azure Storage configured: {config.is_storage_configured()}")
    logger.info(f"Azure OpenAI configured: {config.is_openai_configured()}")
    logger.info(f"Azure OpenAI deployment: {config.AZURE_OPENAI_DEPLOYMENT}")

    CORS(app, resources={
        r"/api/*": {
            "origins": "*",
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-User-Id", "X-User-Email"]
        }
    })

    # Above the upload limit so oversized PDFs get the service's own error message
    app.config['MAX_CONTENT_LENGTH'] = 25 * 1024 * 1024

    # Request logging - only log errors and non-status endpoints at debug level
    @app.before_request
    def log_request():
        if request.path.startswith('/api') and request.path != '/api/status':
            logger.debug(f"→ {request.method} {request.path}")

    @app.after_request
    def log_response(response):
        if request.path.startswith('/api') and request.path != '/api/status':
            if response.status_code >= 400:
                logger.warning(f"← {request.method} {request.path} [{response.status_code}]")
            else:
                logger.debug(f"← {request.method} {request.path} [{response.status_code}]")
        return response

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({
            'status': 'healthy',
            'service': 'Import Operations API',
            'version': '1.0.0'
        })

    @app.route('/api/status', methods=['GET'])
    def api_status():
        """Return configuration status for frontend"""
        return jsonify({
            'nocodbConfigured': config.is_nocodb_configured(),
            'nocodb': get_nocodb_status(),
            'storageConfigured': config.is_storage_configured(),
            'openaiConfigured': config.is_openai_configured(),
            'services': {
                'nocodb': bool(config.NOCODB_API_URL),
                'storage': bool(config.AZURE_STORAGE_CONNECTION_STRING),
                'openai': bool(config.AZURE_OPENAI_ENDPOINT)
            }
        })

    from importflow.routes import ocr, documents, processes, analysis, reports

    app.register_blueprint(ocr.bp)
    app.register_blueprint(documents.bp)
    app.register_blueprint(processes.bp)
    app.register_blueprint(analysis.bp)
    app.register_blueprint(reports.bp)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(413)
    def too_large(error):
        return jsonify({'error': 'Arquivo muito grande'}), 413

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Internal server error'}), 500

    return app
