"""
集成测试（integration tests）

说明：
- 该目录下的测试通过本地临时 HTTP server 模拟站点，走真实的 HttpClient / HttpGateway 链路。
- 不访问外网。
"""
