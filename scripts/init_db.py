"""Initialize the mediagen database."""

from mediagen.config import load_credit_settings, load_database, load_env_files


def main() -> None:
    load_env_files()
    database_url, _, _ = load_database(load_credit_settings())
    print(f"Database initialized: {database_url}")


if __name__ == "__main__":
    main()
