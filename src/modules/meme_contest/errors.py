# src/modules/meme_contest/errors.py


class NoActiveContestError(Exception):
    """从未开始过任何实时比赛。"""


class ScanInProgressError(Exception):
    """已有一个历史扫描正在进行。"""
