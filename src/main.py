"""
WSGI entry points.

    gunicorn src.main:app       # backend
    gunicorn src.main:ai_app    # AI service
"""
import os

from src.ai_factory import create_ai_app
from src.factory import create_app

app = create_app()
ai_app = create_ai_app()


if __name__ == "__main__":
    service = os.getenv("WAIFU_SERVICE", "backend")
    port = int(os.getenv("PORT", "5001" if service == "ai" else "5000"))
    target = ai_app if service == "ai" else app
    target.run(host="0.0.0.0", port=port, debug=os.getenv("FLASK_DEBUG") == "1")
