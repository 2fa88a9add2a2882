"""
PulseWatch 路由模块包

- sweeps.py: 扫描触发（共识、心跳超时、SLA 违约）
- heartbeats.py: 心跳上报与接入说明
- targets.py: SLA 报告、故障历史、测试通知
- incidents.py: 故障诊断快照查询

所有路由在 main.py 中通过 app.include_router() 注册，统一使用 /api/v1/ 前缀。
"""
