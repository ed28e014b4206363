"""
WSGI entry point for linkgate
"""
from dotenv import load_dotenv

load_dotenv()

from linkgate.factory import create_app  # noqa: E402

app = create_app()

# Gunicorn/uWSGI compatibility
application = app

if __name__ == "__main__":
    app.run(host="127.0.0.1", port=5000, debug=False)
