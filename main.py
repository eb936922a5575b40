#!/usr/bin/env python3
"""
Recompress a JPEG at the lowest quality that keeps a similarity metric on target.

Usage examples:
  python main.py photo.jpg photo.min.jpg
  python main.py photo.jpg photo.min.jpg --method smallfry --quality high
  python main.py scan.ppm scan.jpg --min 60 --max 95 --loops 10 --strip
  python main.py photo.jpg - --config web > photo.min.jpg
"""

from qrecompress.cli import run

if __name__ == "__main__":
    run()
