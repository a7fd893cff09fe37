import os
import sys
import logging

# Add the parent directory to the path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Suppress logging output during tests
logging.basicConfig(level=logging.CRITICAL)
