#!/usr/bin/env python3
"""
OSS Client command line

Run this script to sign URLs, list buckets and move files in and out of
OSS without installing the console script.

Usage:
    python run.py presign my-bucket photos/cat.jpg          # Pre-signed GET URL
    python run.py presign my-bucket up.bin --method PUT     # Pre-signed PUT URL
    python run.py ls my-bucket --prefix photos/             # List objects
    python run.py upload my-bucket big.bin ./big.bin        # Multipart upload
    python run.py download my-bucket big.bin ./copy.bin     # Download to a new file
    python run.py -c custom.json -v ls                      # Custom config, verbose
"""

import sys
from ossclient.cli import main

if __name__ == "__main__":
    sys.exit(main())
