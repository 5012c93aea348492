"""服务层：凭据、网络拉取、GitHub 客户端、安装与更新检查"""
