#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

会引导用户填写必要的配置项，生成 .env 文件。
"""
import os
import secrets

# 项目根目录
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


# 配置项定义：(env_key, 描述, 默认值, 是否必填)
CONFIG_ITEMS = [
    # === 数据库 ===
    ("DATABASE_URL", "数据库连接地址", "sqlite:///data/carwash.db", False),

    # === Web 平台 ===
    ("WEB_HOST", "Web 监听地址", "0.0.0.0", False),
    ("WEB_PORT", "Web 监听端口", "8080", False),

    # === 认证 ===
    ("ADMIN_USERNAME", "默认管理员用户名（仅在用户表为空时创建）", "admin", False),
    ("ADMIN_PASSWORD", "默认管理员密码（首次登录后请修改）", "admin123", True),
    ("SESSION_SECRET", "会话密钥（建议使用随机字符串）", secrets.token_hex(32), False),
    ("SESSION_DAYS", "登录会话有效天数", "30", False),
    ("COOKIE_SECURE", "仅通过 HTTPS 发送会话 Cookie（true/false）", "false", False),

    # === 备份 ===
    ("BACKUP_DIR", "备份文件目录", "backups", False),
    ("BACKUP_KEEP", "自动备份保留份数", "10", False),
    ("AUTO_BACKUP_HOUR", "每日自动备份时间（小时，本地时间）", "0", False),
]

SECTION_NAMES = {
    "DATABASE": "# === 数据库配置 ===",
    "WEB": "# === Web 平台配置 ===",
    "ADMIN": "# === 认证配置 ===",
    "SESSION": "# === 认证配置 ===",
    "COOKIE": "# === 认证配置 ===",
    "BACKUP": "# === 备份配置 ===",
    "AUTO": "# === 备份配置 ===",
}


def main():
    print()
    print("=" * 60)
    print("  Car Wash Manager 配置向导")
    print("  生成 .env 配置文件")
    print("=" * 60)
    print()

    # 检查是否已存在 .env
    if os.path.exists(ENV_FILE):
        print(f"⚠️  检测到已有 .env 文件: {ENV_FILE}")
        choice = input("是否覆盖？(y/N): ").strip().lower()
        if choice != "y":
            print("已取消。")
            return
        print()

    env_lines = [
        "# Car Wash Manager 配置文件",
        "# 由 scripts/setup_env.py 自动生成",
    ]

    for key, desc, default, required in CONFIG_ITEMS:
        # 根据前缀分组显示，避免重复写同一个 section header
        header = SECTION_NAMES.get(key.split("_")[0], "# === 其他配置 ===")
        if header not in env_lines:
            env_lines.append("")
            env_lines.append(header)

        req_tag = " [必填]" if required else ""
        default_hint = f" (默认: {default})" if default else ""
        print(f"📝 {desc}{req_tag}")

        while True:
            value = input(f"  {key}={default_hint}: ").strip()
            if not value:
                value = default
            if required and not value:
                print(f"  ❌ {key} 是必填项，请输入值。")
                continue
            break

        env_lines.append(f"{key}={value}")
        print()

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(env_lines) + "\n")

    print("=" * 60)
    print(f"  ✅ 配置文件已生成: {ENV_FILE}")
    print()
    print("  初始化数据库：")
    print("    python scripts/init_db.py")
    print()
    print("  启动应用：")
    print("    python app.py")
    print("=" * 60)


if __name__ == "__main__":
    main()
