"""通用工具：文件读写、日志、子进程、HTTP 传输"""
