from dotenv import load_dotenv
import os

# Load environment variables from .env file before the config classes read them
load_dotenv()

from propledger import create_app  # noqa: E402

app = create_app(os.getenv("APP_ENV", "development"))

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    app.run(host="0.0.0.0", port=port)
