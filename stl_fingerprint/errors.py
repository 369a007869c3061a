# stl_fingerprint/errors.py
from typing import Dict, Optional


class EngineError(Exception):
    """所有引擎错误的基类，exit_code 对应 CLI 退出码。"""

    exit_code = 3


class InputError(EngineError):
    """证据流或参数格式错误：查询不会开始。"""

    exit_code = 3


class ConfigError(InputError):
    pass


class ResolutionError(EngineError):
    """
    模板参数推导失败：
      - 不影响 Matcher 的 family/variant 判定
      - hypotheses 记录互相冲突的推导结果，供调用方检查
    """

    exit_code = 6

    def __init__(self, kind: str, message: str,
                 hypotheses: Optional[Dict[str, Optional[int]]] = None):
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message
        self.hypotheses = dict(hypotheses or {})

    def as_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind,
            "message": self.message,
            "hypotheses": dict(self.hypotheses),
        }


class InconsistentWidth(ResolutionError):
    def __init__(self, message: str, hypotheses: Dict[str, Optional[int]]):
        super().__init__("InconsistentWidth", message, hypotheses)


class InternalInvariantViolation(EngineError):
    """Catalog 或引擎自身的缺陷（不是被分析二进制的问题），总是致命。"""

    exit_code = 4


class CatalogError(InternalInvariantViolation):
    pass


class BindingError(InternalInvariantViolation):
    pass


class QueryTimeout(EngineError):
    exit_code = 5

    def __init__(self, stage: str):
        super().__init__(f"query deadline exceeded during {stage}")
        self.stage = stage
