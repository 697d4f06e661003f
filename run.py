import subprocess
# Runs pip and the Flask server as child processes

import sys
import webbrowser
import os
import time

PORT = 5001  # Use 5001 to avoid macOS AirPlay conflict on 5000


def run_app():
    """Install the project, start the Flask API and open it in the browser."""
    print("Starting Chroma Vision...")

    # 1. Install the project and its dependencies
    print("Installing dependencies...")
    try:
        subprocess.check_call([sys.executable, "-m", "pip", "install", "-e", "."])
    except subprocess.CalledProcessError as e:
        print(f"Error installing dependencies: {e}")
        return 1
        # The server cannot run without its dependencies

    # 2. Run the Flask backend
    print(f"Starting Flask server on port {PORT}...")
    env = os.environ.copy()
    env["PORT"] = str(PORT)
    # app.py reads PORT from the environment

    backend_process = subprocess.Popen([sys.executable, "app.py"], env=env)

    # 3. Give the server a moment to start
    time.sleep(2)

    # 4. Open the API in the browser
    url = f"http://localhost:{PORT}/api/chroma/tip"
    print(f"Opening: {url}")
    webbrowser.open(url)

    print("\nChroma Vision is running!")
    print(f"API:      http://localhost:{PORT}/api/chroma/...")
    print("Press Ctrl+C in this terminal to stop.")

    try:
        backend_process.wait()
        # Blocks until the server exits
    except KeyboardInterrupt:
        print("\nStopping Chroma Vision...")
        backend_process.terminate()
    return 0


if __name__ == "__main__":
    sys.exit(run_app())
