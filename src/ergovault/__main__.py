"""Entry point for running a sync pass as a module: python -m ergovault"""

# Load .env file before importing anything else
from dotenv import load_dotenv
load_dotenv()

from ergovault.app import main

if __name__ == "__main__":
    main()
