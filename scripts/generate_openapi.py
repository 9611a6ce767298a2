#!/usr/bin/env python3
"""Write the OpenAPI document of the uploads server to docs/api/openapi.json.

Re-run after changing routes or response models.

Usage:
    python scripts/generate_openapi.py
"""

import json
import sys
from pathlib import Path

from portal_uploads.server.main import create_app


def main() -> int:
    # The lifespan is not entered, so no portal settings are needed here
    schema = create_app().openapi()

    docs_dir = Path(__file__).parent.parent / "docs" / "api"
    docs_dir.mkdir(parents=True, exist_ok=True)

    openapi_file = docs_dir / "openapi.json"
    with open(openapi_file, "w") as f:
        json.dump(schema, f, indent=2)

    print(f"Generated OpenAPI spec: {openapi_file}")
    for path, methods in schema.get("paths", {}).items():
        for method in methods:
            if method != "parameters":
                print(f"   {method.upper()} {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
