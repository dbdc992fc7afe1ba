import logging
import sys


def get_logger(name: str = "snws"):
    logger = logging.getLogger(name)
    root = logging.getLogger("snws")
    if not root.handlers:
        h = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s %(message)s")
        h.setFormatter(fmt)
        root.addHandler(h)
        root.setLevel(logging.INFO)
    return logger
