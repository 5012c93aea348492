"""dlpkg - DomainLang 依赖包管理"""

__version__ = "0.1.0"
