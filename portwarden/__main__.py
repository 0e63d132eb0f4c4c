from portwarden import cli_entry

if __name__ == "__main__":
    cli_entry()
