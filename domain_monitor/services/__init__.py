"""监控服务"""
