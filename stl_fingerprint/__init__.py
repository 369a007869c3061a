# stl_fingerprint/__init__.py

"""
STL Fingerprint Engine

- 从反编译器/抽取器给出的证据中识别 MSVC STL 容器（string / vector / map / set / list / bitset）
- 输出：
    - 匹配结果（Unique / Ambiguous / NoMatch + 候选置信度与缺失特征）
    - 推导出的模板参数（元素大小、key/value 大小、bitset 字宽）
    - 字节精确的布局：PREFIX.report.yml / PREFIX.layout.json
"""

__all__ = [
    "abi",
    "config",
    "errors",
    "evidence",
    "engine_types",
    "patterns",
    "matcher",
    "resolver",
    "layout",
    "reporter",
    "engine",
    "cli",
]
