import os

from aquadaily import create_app
from aquadaily.config import configure_logging, load_settings


settings = load_settings()
configure_logging(settings.log_level)
app = create_app(settings)


if __name__ == "__main__":
    debug = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    app.run(debug=debug)
