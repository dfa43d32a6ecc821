import sys
import tempfile
import time
from pathlib import Path

from buildwatch import watch


# Define a reaction that a build tool would replace with a rebuild.
def rebuild(path):
    print(f"Changed: {path}")


# Report errors from the running session instead of raising them.
def report(error):
    print(f"Watch error: {error}", file=sys.stderr)


with tempfile.TemporaryDirectory() as root:
    (Path(root) / "src").mkdir()

    # Start watching, ignoring editor temp files.
    session = watch([root], ["**/*.tmp", "**/.git/**"], on_error=report, debounce_ms=200)(rebuild)

    # Simulate an editor save burst and a temp file.
    main = Path(root) / "src" / "main.c"
    for i in range(3):
        main.write_text(f"int main() {{ return {i}; }}\n")
        time.sleep(0.01)
    (Path(root) / "a.tmp").write_text("scratch")

    # Give the debounce window time to elapse: "Changed: .../src/main.c" is printed once.
    time.sleep(1)

    session.cancel()
    print("Session cancelled.")
