"""启动脚本"""

import uvicorn
from datazones.core.config import settings
from datazones.utils.logger import log


if __name__ == "__main__":
    log.info("="*60)
    log.info("Data Zones - 启动中")
    log.info("="*60)
    log.info(f"服务地址: http://{settings.api_host}:{settings.api_port}")
    log.info(f"API 文档: http://{settings.api_host}:{settings.api_port}/docs")
    log.info(f"调试模式: {settings.debug}")
    log.info(f"自动系列上限: {settings.max_auto_series}")
    log.info(f"透视结果轮询: {settings.schema_poll_max_attempts} x {settings.schema_poll_interval_ms}ms")
    log.info("="*60)

    uvicorn.run(
        "datazones.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level="info"
    )
