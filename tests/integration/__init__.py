"""
Integration Tests Package for the Parking Garage

These tests drive the assembled system the way an operator would:
1. End-to-end entry, payment and exit scenarios
2. Command processing on top of the service
3. Event flow from the service to the message broker
4. Concurrent entries and exits against one garage
"""

import sys
from pathlib import Path

# Add the project root to Python path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))
