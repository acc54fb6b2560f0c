from flask import Flask
import click
import logging
from config.settings import Config
from resource_gc.utils.dependencies import configure_container, clear_test_resources

def create_app(config_class=Config, database_manager=None, base=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Configure logging
    from resource_gc.utils.logging_config import setup_logging
    from resource_gc.utils.structured_logging import StructuredLogger

    setup_logging(
        app_name="resource_gc",
        log_level=app.config.get('LOG_LEVEL', 'INFO'),
        log_dir=app.config.get('LOG_DIR', 'logs'),
        enable_console=app.debug or app.testing,
        enable_file=app.config.get('LOG_TO_FILE', True)
    )
    StructuredLogger.setup_logging(app)

    # The mode flag is read once here. Building the data access layer installs
    # the interceptor when running in test mode
    container = configure_container(config_class, database_manager=database_manager, base=base)
    app.extensions['resource_gc'] = container
    app.extensions['resource_gc.data_access'] = container.data_access

    if container.test_mode:
        from resource_gc.api.test_resources import test_resources_bp
        app.register_blueprint(test_resources_bp, url_prefix='/api/test-resources')

    @app.cli.command('clear-test-resources')
    def clear_test_resources_command():
        """Delete every resource tracked since the last cleanup"""
        report = container.clear_test_resources()
        for entity_type, count in sorted(report.deleted.items()):
            click.echo(f"Deleted {count} {entity_type}")
        for entity_type, error in sorted(report.failures.items()):
            click.echo(f"Failed to delete {entity_type}: {error}", err=True)
        if not report.ok:
            raise SystemExit(1)

    @app.route('/health')
    def health_check():
        """Simple health check endpoint"""
        return {'status': 'healthy', 'mode': container.config.MODE}, 200

    logging.getLogger(__name__).info(f"Application created in {container.config.MODE} mode")
    return app

__all__ = ['create_app', 'clear_test_resources']
