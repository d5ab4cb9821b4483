"""Tests for sift_homography."""
