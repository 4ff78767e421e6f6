"""
Arbitra - Client Core

Records transaction events locally and exchanges integrity-checked
messages with peers over a raw socket.

DESIGN PRINCIPLES:
1. "Not found" is a normal answer, not a failure
2. Real I/O faults fail loudly
3. Every message carries a digest of its body
4. Storage and channel are independent, composable units
"""

__version__ = "1.0.0"
__author__ = "Arbitra Team"
