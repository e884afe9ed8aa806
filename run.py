import uvicorn
from config import config

if __name__ == "__main__":
    # Parse options before the app module builds its engine from the config
    config.setup_from_args()
    from main import app

    # Display startup information with available command-line options
    print("\n" + "="*60)
    print("Workout Sync Client")
    print("="*60)
    print(f"Mode: {config.mode_description}")
    print(f"Remote store: {config.api_base_url}")
    print("\nAvailable modes:")
    print("  python run.py --mode debug         # Debug with sync snapshots")
    print("  python run.py --mode debug_no_save # Debug without sync snapshots")
    print("  python run.py --mode non_debug     # Minimal logging only")
    print("="*60 + "\n")

    # Start the local FastAPI service the browser UI talks to
    uvicorn.run(app, host=config.host, port=config.port)
