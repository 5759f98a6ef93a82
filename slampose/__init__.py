"""Pose estimation tools for visual SLAM: EPnP, RANSAC PnP, Sim3, trajectory output and thread flags."""

__version__ = "0.1.0"
__all__ = ["epnp", "pnp_ransac", "sim3", "trajectory", "control"]