import os
from urllib.parse import quote_plus
from dotenv import load_dotenv

# 加载环境变量
load_dotenv()


class Settings:
    # API基础配置
    API_TITLE = os.getenv("API_TITLE", "佣金台账API")
    API_VERSION = os.getenv("API_VERSION", "1.0.0")
    DESCRIPTION = os.getenv("DESCRIPTION", "NF-e 导入、佣金单据、结算单及服务发票管理接口")

    # 默认环境 (test, prod, local)
    ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

    # 日志级别
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # 上传文件临时目录
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

    # 未配置MySQL时使用的数据库地址
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./commission.db")

    # 测试环境数据库
    DB_TEST_HOST = os.getenv("DB_TEST_HOST")
    DB_TEST_PORT = int(os.getenv("DB_TEST_PORT", "3306"))
    DB_TEST_USER = os.getenv("DB_TEST_USER")
    DB_TEST_PASSWORD = os.getenv("DB_TEST_PASSWORD", "")
    DB_TEST_DATABASE = os.getenv("DB_TEST_DATABASE")

    # 生产环境数据库
    DB_PROD_HOST = os.getenv("DB_PROD_HOST")
    DB_PROD_PORT = int(os.getenv("DB_PROD_PORT", "3306"))
    DB_PROD_USER = os.getenv("DB_PROD_USER")
    DB_PROD_PASSWORD = os.getenv("DB_PROD_PASSWORD", "")
    DB_PROD_DATABASE = os.getenv("DB_PROD_DATABASE")

    # 本地环境数据库（可选，复用测试环境配置或单独配置）
    DB_LOCAL_HOST = os.getenv("DB_LOCAL_HOST")
    DB_LOCAL_PORT = int(os.getenv("DB_LOCAL_PORT", DB_TEST_PORT))
    DB_LOCAL_USER = os.getenv("DB_LOCAL_USER", DB_TEST_USER)
    DB_LOCAL_PASSWORD = os.getenv("DB_LOCAL_PASSWORD", DB_TEST_PASSWORD)
    DB_LOCAL_DATABASE = os.getenv("DB_LOCAL_DATABASE", DB_TEST_DATABASE)

    def resolve_environment(self, environment: str = None) -> str:
        """未指定环境时使用默认环境"""
        if environment is None:
            return self.ENVIRONMENT
        if environment not in ["test", "prod", "local"]:
            raise ValueError(f"不支持的环境：{environment}，仅支持 test/prod/local")
        return environment

    def get_db_config(self, environment: str = None):
        """根据环境获取MySQL配置，未配置主机时返回None"""
        environment = self.resolve_environment(environment)
        if environment == "prod":
            config = {
                "host": self.DB_PROD_HOST,
                "port": self.DB_PROD_PORT,
                "user": self.DB_PROD_USER,
                "password": self.DB_PROD_PASSWORD,
                "database": self.DB_PROD_DATABASE
            }
        elif environment == "local":
            config = {
                "host": self.DB_LOCAL_HOST,
                "port": self.DB_LOCAL_PORT,
                "user": self.DB_LOCAL_USER,
                "password": self.DB_LOCAL_PASSWORD,
                "database": self.DB_LOCAL_DATABASE
            }
        else:
            config = {
                "host": self.DB_TEST_HOST,
                "port": self.DB_TEST_PORT,
                "user": self.DB_TEST_USER,
                "password": self.DB_TEST_PASSWORD,
                "database": self.DB_TEST_DATABASE
            }
        if not config["host"]:
            return None
        return config

    def get_database_url(self, environment: str = None) -> str:
        """配置了MySQL则使用pymysql连接串，否则回退到 DATABASE_URL"""
        db_config = self.get_db_config(environment)
        if db_config is None:
            return self.DATABASE_URL
        return (
            f"mysql+pymysql://{db_config['user']}:{quote_plus(db_config['password'] or '')}@"
            f"{db_config['host']}:{db_config['port']}/{db_config['database']}"
            "?charset=utf8mb4"
        )


# 创建配置实例
settings = Settings()
