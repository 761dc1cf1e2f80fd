"""tabflow：按空闲时间自动收纳浏览器标签页。"""

__version__ = "0.1.0"
