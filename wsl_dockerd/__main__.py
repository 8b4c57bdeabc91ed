from wsl_dockerd.cli import main

main()
