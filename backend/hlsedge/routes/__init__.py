"""
HLS Edge Proxy — Routes Package
=================================

Route Inventory:
    - health.py:  GET|HEAD <health_path>          (constant "ok")
    - proxy.py:   any method /{path}              (everything else → ProxyService)

Routes stay thin: they pull method, path, query and headers off the request
and hand them to the service layer.
"""
