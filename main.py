"""
Field Service CRM - server entry point
"""

import os

from database.connection import init_db, get_db
from database.performance_indexes import create_performance_indexes
from services.user_service import UserService
from utils.logger import logger
from web_app import app


def prepare_database():
    """Create tables and the default admin"""
    logger.info("initializing database...")
    init_db()
    create_performance_indexes()

    db = next(get_db())
    try:
        if UserService(db).ensure_admin_seed():
            logger.info("default admin account created")
    except Exception as e:
        logger.error(f"could not seed the admin account: {e}", exc_info=True)
    finally:
        db.close()


def main():
    prepare_database()

    # PORT is set by hosting platforms; debug stays off there
    port = int(os.environ.get('PORT', 5000))
    debug_mode = os.environ.get('FLASK_ENV', 'development') != 'production' and not os.environ.get('PORT')

    logger.info(f"web API listening on http://0.0.0.0:{port}")
    app.run(host='0.0.0.0', port=port, debug=debug_mode)


if __name__ == "__main__":
    main()
