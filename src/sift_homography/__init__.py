"""
sift-homography: feature match verification, homography refinement and match annotation.
"""

__version__ = "0.1.0"
