#!/usr/bin/env python3
"""
Basic usage examples for Portal Uploads.

This script demonstrates the most common operations:
- Uploading a large file with the one-call helper
- Running several uploads in a submission session
- Collecting attachments for the final submission

Requires PORTAL_API_URL, PORTAL_ASSIGNMENT_ID, PORTAL_STUDENT_EMAIL and
PORTAL_STUDENT_NAME in the environment, plus one or more file paths.
"""

import asyncio
import os
import sys

from portal_uploads import (
    PortalUploadAPI,
    PortalUploadError,
    UploadContext,
    UploadTask,
    upload_file,
)


def print_progress(task: UploadTask) -> None:
    print(f"   {task.source.name}: {task.status_text}")


async def upload_session(paths):
    context = UploadContext.from_env()

    async with PortalUploadAPI() as api:
        async with api.open_submission(context) as registry:
            registry.add_listener(print_progress)
            for path in paths:
                if registry.add(path, os.path.basename(path)) is None:
                    print(f"   {path} is small enough to attach inline")
            await registry.wait_all()

            print("\nAttachments ready for submission:")
            for f in registry.submission_files():
                marker = "" if f.verified else " (pending verification)"
                print(f"   • {f.display_name}: {f.file_url}{marker}")


def main():
    """Demonstrate basic Portal Uploads operations."""
    paths = sys.argv[1:]
    if not paths:
        print("usage: basic_usage.py FILE [FILE ...]")
        return

    print("\n1. Uploading a single file...")
    try:
        task = upload_file(
            paths[0],
            assignment_id=os.environ["PORTAL_ASSIGNMENT_ID"],
            student_email=os.environ["PORTAL_STUDENT_EMAIL"],
            student_name=os.environ["PORTAL_STUDENT_NAME"],
        )
    except PortalUploadError as e:
        print(f"   Error: {e}")
        return
    if task is None:
        print("   File is below the large-file threshold")
    else:
        print(f"   {task.source.name}: {task.status_text}")

    print("\n2. Uploading all files in one submission session...")
    try:
        asyncio.run(upload_session(paths))
    except PortalUploadError as e:
        print(f"   Error: {e}")


if __name__ == "__main__":
    main()
