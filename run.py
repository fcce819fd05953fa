import os
from backend.app import create_app, init_database

app = create_app()

if __name__ == '__main__':
    # Tables are created on every start unless explicitly skipped
    if os.getenv('SKIP_DB_INIT', '0') not in ('1', 'true', 'True'):
        init_database()

    host = os.getenv('HOST', '0.0.0.0')
    port = int(os.getenv('PORT', '5000'))
    debug = os.getenv('FLASK_DEBUG', '0') in ('1', 'true', 'True')
    app.run(debug=debug, host=host, port=port)
