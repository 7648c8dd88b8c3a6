from ptyhost.env.detector import VirtualEnv, detect_environments

__all__ = ["VirtualEnv", "detect_environments"]
