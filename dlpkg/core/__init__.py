"""核心层：数据模型、manifest / lock、包缓存、import 解析"""
